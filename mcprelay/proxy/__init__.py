"""The relay core: secret gate, header translation, dispatch and response relay."""
