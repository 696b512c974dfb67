"""
azops: operational tooling for Azure environments.

Independent tools sharing one configuration file and CLI:
- TCP connectivity and name resolution checks
- DNS zone reconciliation (private and public zones)
- Key Vault backup and restore
- Bulk CSV loading into SQL databases
- Directory archival to Blob Storage with tiered rehydration on restore
- Route table management with CIDR validation and lookup
- Reservation recommendations from usage exports
"""

__version__ = "0.1.0"
