"""Reference index collaborators: symbols, graph, retrieval, bootstrap."""
