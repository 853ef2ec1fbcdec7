"""Question answering: keyword retrieval, prompt assembly, LLM client."""
