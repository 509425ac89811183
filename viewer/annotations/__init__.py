"""
Frame-scoped annotations.

Local entities live in an `AnnotationSource`; `AnnotationSyncEngine` keeps them in step
with the remote store for whatever viewport frame is current.
"""
