"""
Service layer.

``fizzbuzz_service`` turns configurations into FizzBuzz sequences and
their JSON rendering; ``stats_service`` counts which configurations
are requested.  Neither logs: errors are raised to the API layer.
"""
