"""
Core utilities: domain exceptions shared by the evaluator, the reputation
store, and the chain clients.
"""
