"""Team memory injection and upstream failure classification for the LLM relay."""
