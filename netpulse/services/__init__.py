"""
Services subpackage - signal collection and state reconciliation.

- EndpointProber: TCP/HTTP reachability probes
- DnsResolverMultiplexer: platform DNS strategy chain
- InterfaceMonitor / VpnDetector: interface diffing and VPN heuristics
- QualityClassifier: confidence score and quality tier
- StateReconciler: gated, versioned NetworkState mutations
- StateBroadcaster: subscription channel for confirmed changes
- NetworkScheduler: interface, quick and comprehensive check loops
- NetworkEngine: facade with start/stop lifecycle
"""
