"""Database layer - engine, base classes, column types, immutability."""
