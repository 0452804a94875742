"""
PharmaLedger: inventory ledger and sale/dispense transaction engine
"""
__version__ = "0.1.0"
