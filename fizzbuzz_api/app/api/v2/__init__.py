"""
Version 2 of the API.

Version 2 reports statistics as ``{"most_frequent": {"count": ..,
"config": {..}}}`` and breaks ties between equally requested
configurations deterministically.
"""
