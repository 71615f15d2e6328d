"""Document integrity proofs: Merkle batches and hash-chained timestamp proofs."""
__version__ = "0.1.0"
