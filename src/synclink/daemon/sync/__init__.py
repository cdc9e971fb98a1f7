"""Bidirectional file sync with a single plugin peer.

Architecture:
    PeerServer / FileWatcher → SyncController → transition → EffectExecutor

Components:
- **SyncController**: single consumer of all events (controller)
- **domain**: pure state machine, conflict detection, change validation
- **EffectExecutor**: carries out effects against disk, peer and metadata
- **FileMetadataCache**: per-file sync bookkeeping, persisted per project
- **HashTracker**: suppresses echoes of the daemon's own writes
- **UserPromptCoordinator**: questions answered in the plugin UI
- **FileWatcher**: debounced local change detection (watchdog)

Import the components from their modules; this package does not re-export
them because ``synclink.daemon.state`` and ``synclink.daemon.project`` depend
on ``synclink.daemon.sync.types``.
"""
