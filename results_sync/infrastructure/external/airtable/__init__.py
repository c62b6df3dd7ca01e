"""
Destino Airtable: cliente REST y lector del snapshot de la tabla.
"""
