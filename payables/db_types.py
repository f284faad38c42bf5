"""Database-agnostic column types shared by the models.

SQLite only auto-assigns row ids for columns declared exactly as
INTEGER PRIMARY KEY, so BIGINT keys fall back to INTEGER there.
"""
from sqlalchemy import BigInteger, Integer, Numeric

IdType = BigInteger().with_variant(Integer(), 'sqlite')

# Money columns: 14 digits, 2 decimals
Money = Numeric(14, 2)
