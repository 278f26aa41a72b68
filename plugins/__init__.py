"""Builtin source extensions, registered with ExtensionLoader.register_builtin_plugins()."""
