"""Extension system for manga sources.

- base: Capability contract every source implements
- module / process / remote: Capability variants by technology
- rpc: JSON envelope shared by process and remote extensions
- loader: Install, update, uninstall and resolve extensions
"""
