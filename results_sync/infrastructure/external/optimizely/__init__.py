"""
Origen Optimizely: cliente REST v2 de solo lectura.
"""
