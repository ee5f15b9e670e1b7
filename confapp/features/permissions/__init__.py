"""
Permission feature module.

Closed role model, membership store and the hierarchical authorization engine
for org / conference / track scopes.
"""
