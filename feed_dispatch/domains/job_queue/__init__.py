# Job Queue Domain
#
# Ordered, unbounded queue of jobs waiting for worker capacity.
