import logging

#~ DEBUG bits (turn on logging in a specified module):
#~ 0=partition tables
#~ 1=filesystem probe, free block lists
#~ 2=ranges, bmap rendering
#~ 3=hole punching

def log(*a):
    logging.getLogger('BMAPtools').debug(*a)

def warn(*a):
    logging.getLogger('BMAPtools').warning(*a)
