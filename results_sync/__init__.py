"""
Job de sincronización one-way: Optimizely (resultados de experimentos) -> Airtable.

Este paquete está diseñado para ejecutarse como job (cron / scheduler),
no como servicio de larga duración.

Objetivos de diseño:
- Convergencia: tras cada corrida las claves de Airtable son exactamente
  las de las filas deseadas.
- Idempotencia: se puede ejecutar N veces sin duplicar filas.
- Concurrencia acotada contra ambas APIs.
"""

__version__ = "1.0.0"
