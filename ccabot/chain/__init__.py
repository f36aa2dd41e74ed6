"""
Chain access: contract ABIs, submitBid transaction building and the web3 client.
"""
