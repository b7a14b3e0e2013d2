"""
LTI service integration: transport, protocol clients, dispatcher and persistence.
"""
