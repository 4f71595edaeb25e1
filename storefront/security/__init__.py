"""Session tokens, the session gate, and the route guard."""
