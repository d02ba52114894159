"""Library App - Services Package

Business operations over the persistence gateway:
- Loan lifecycle (borrow / return)
- Book catalogue maintenance
- Member registration and maintenance
- Authentication
"""
