"""
Pydantic schema definitions for API payloads.

Schemas are separated from the ``FizzBuzzConfig`` dataclass used by
the services to decouple the API representation from the core.
"""
