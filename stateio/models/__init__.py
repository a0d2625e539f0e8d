"""Account table container, identities and the labor share model."""
