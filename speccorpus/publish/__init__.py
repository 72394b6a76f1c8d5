"""Publishing: version-control boundary and the publish gate."""
