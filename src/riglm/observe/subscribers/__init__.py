"""Event subscribers registered by riglm.observe.emitter.configure()."""
