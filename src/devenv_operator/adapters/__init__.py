# ABOUTME: Adapters package initialization for the devenv operator
# ABOUTME: Contains the Crossplane and Argo CD adapters used by the reconciler

"""
devenv operator adapters

Each adapter owns one external system, creating resources there and
reporting their observed state:

    - cluster.py: Crossplane cluster claims, cluster classes, node pools
    - applications.py: Argo CD applications (source and dependencies)
"""
