"""Named tool calls translated into single Render REST requests."""
