"""Dependency Injection Container for netpulse."""
from dependency_injector import containers, providers

from netpulse.core.config import EngineConfig
from netpulse.services.dns_resolver import DnsResolverMultiplexer, default_strategies
from netpulse.services.endpoint_prober import EndpointProber
from netpulse.services.interface_monitor import PsutilInterfaceProvider
from netpulse.services.network_engine import NetworkEngine
from netpulse.services.state_broadcaster import StateBroadcaster


class ApplicationContainer(containers.DeclarativeContainer):
    """DI Container holding the single engine instance and its collaborators."""

    # Override with providers.Object(EngineConfig.from_file(...)) to load a file
    engine_config = providers.Singleton(EngineConfig)

    broadcaster = providers.Singleton(StateBroadcaster)

    prober = providers.Singleton(
        EndpointProber,
        grace=engine_config.provided.probe_grace,
    )

    dns_strategies = providers.Callable(
        default_strategies,
        nslookup_server=engine_config.provided.nslookup_server,
        command_timeout=engine_config.provided.subprocess_timeout,
    )

    resolver = providers.Singleton(
        DnsResolverMultiplexer,
        strategies=dns_strategies,
        timeout=engine_config.provided.dns_timeout,
    )

    interface_provider = providers.Singleton(PsutilInterfaceProvider)

    network_engine = providers.Singleton(
        NetworkEngine,
        config=engine_config,
        prober=prober,
        resolver=resolver,
        interface_provider=interface_provider,
        broadcaster=broadcaster,
    )
