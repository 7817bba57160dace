"""
dbpull - Pull a production MySQL database into the local one.

Backs up the local database, dumps production over SSH and imports the
dump locally, with weighted progress across the three stages.
"""

__version__ = "1.0.0"
