"""
Casos de uso del job.
"""
