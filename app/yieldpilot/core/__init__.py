"""
Core Module

Clock abstraction, collaborator protocols and the error taxonomy.
"""
