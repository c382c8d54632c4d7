"""
Utility Modules for tts-saas.

    - timeit.py: Performance measurement
"""
