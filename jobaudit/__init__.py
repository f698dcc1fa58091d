"""Job audit service package.

A Flask application whose scheduler registers one recurring job at startup.
Each tick of the job writes an audit record; the REST API reads them back.
Modules are imported as ``jobaudit.<module>``.
"""
