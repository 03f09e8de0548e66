"""Core engine: conversation, actions, execution, verification, and the run loop."""
