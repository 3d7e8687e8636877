"""
promptp2p/nodes/

Runnable node entry points:
- python -m promptp2p.nodes.gateway_node
- python -m promptp2p.nodes.auth_node
- python -m promptp2p.nodes.processor_node
- python -m promptp2p.nodes.client_node
"""
