"""
Inference Engine

Structured value codec and the client for remote prediction endpoints.
"""

from proshot.engines.inference.client import InferenceClient, first_image_payload, image_part

__all__ = ["InferenceClient", "first_image_payload", "image_part"]
