"""content/ -- Articles, tags and the publish workflow.

Layer rule: content/ may import from auth/ (for the policy decision point and
audit actors), audit/, core/ and db/. It never imports from api/.
"""
