"""Grade a fine-tuned model's classification outputs with a hosted evals API."""

__version__ = "0.1.0"
