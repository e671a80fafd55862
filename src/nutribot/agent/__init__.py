"""Conversation agent: prompt assembly, memory, tools and model dispatch."""
