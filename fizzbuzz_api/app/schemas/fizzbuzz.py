"""
Pydantic schemas for the FizzBuzz endpoints.

The sequence itself is streamed as raw JSON bytes and has no model;
these schemas describe the statistics response and error bodies.
"""

from typing import Optional

from pydantic import BaseModel, Field

from fizzbuzz_api.app.services.fizzbuzz_service import FizzBuzzConfig


class FizzBuzzConfigRead(BaseModel):
    """Wire representation of a FizzBuzz configuration."""

    limit: int = Field(..., description="Last number of the sequence (the first is 1)")
    int1: int = Field(..., description="First divisor")
    int2: int = Field(..., description="Second divisor")
    str1: str = Field(..., description="Replacement for multiples of int1")
    str2: str = Field(..., description="Replacement for multiples of int2")

    @classmethod
    def from_config(cls, config: FizzBuzzConfig) -> "FizzBuzzConfigRead":
        return cls(**config.to_dict())


class MostFrequentRead(BaseModel):
    count: int = Field(0, description="Number of requests of the most frequent configuration")
    config: Optional[FizzBuzzConfigRead] = Field(
        None, description="Most frequent configuration; absent until the first request"
    )


class StatsRead(BaseModel):
    """Schema for the statistics endpoint."""

    most_frequent: MostFrequentRead


class ErrorRead(BaseModel):
    error: str
