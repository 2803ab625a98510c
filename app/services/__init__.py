"""Business logic services for the Pressroom engine."""
