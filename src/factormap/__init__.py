"""
Latent-factor recommendation toolkit.

Modules are grouped into data readers, similarity engines, factor models with
an attribute-to-feature mapping, iterative training pipelines, and utilities.
"""
