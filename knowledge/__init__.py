"""
CogniLab knowledge base.

Contains static laboratory knowledge:
- Lab sections and their test menus
- Test pricing
- Reference ranges
- Component test registry (sub-measurements billed under a parent test)
"""
