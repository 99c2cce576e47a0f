"""
Context entities — business rules, glossary entries, patterns, conventions
and documents stored per repo or per project.
"""
