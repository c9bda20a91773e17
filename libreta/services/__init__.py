"""
Libreta Services
================
Business rules over the working set: permissions, completion accounting,
appreciation lifecycle, grade mutations, monitoring and writing help.
"""
