"""FizzBuzz HTTP service; the application lives in ``fizzbuzz_api.app``."""
