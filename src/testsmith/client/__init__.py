"""Front-end side: worker supervision and conversation state."""
