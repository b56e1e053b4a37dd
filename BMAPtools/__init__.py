"Block map (bmap) generation and sparsification for partitioned disk images"
__version__ = '1.0.0'
