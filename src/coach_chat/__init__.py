"""Coach chat: streaming coaching assistant backend."""
