"""Namespaces and terms of the repository's RDF lexicon, for use with
`rdflib` code."""

from rdflib import Namespace

ebucore = Namespace('http://www.ebu.ch/metadata/ontologies/ebucore/ebucore#')
"""[European Broadcasting Union (EBU) Core](https://www.ebu.ch/metadata/ontologies/ebucore/)"""

fedora = Namespace('http://fedora.info/definitions/v4/repository#')
"""[Fedora Commons Repository Ontology](https://fedora.info/definitions/v4/2016/10/18/repository)"""

iana = Namespace('http://www.iana.org/assignments/relation/')
"""[IANA Link Relations](https://www.iana.org/assignments/link-relations/link-relations.xhtml)"""

ldp = Namespace('http://www.w3.org/ns/ldp#')
"""[Linked Data Platform](https://www.w3.org/TR/ldp/)"""

premis = Namespace('http://www.loc.gov/premis/rdf/v1#')
"""[Preservation Metadata: Implementation Strategies (PREMIS)](https://id.loc.gov/ontologies/premis-1-0-0.html)"""

rdf = Namespace('http://www.w3.org/1999/02/22-rdf-syntax-ns#')
"""[Resource Description Framework (RDF)](https://www.w3.org/TR/rdf11-schema/)"""

# resource metadata
CREATED_DATE = fedora.created
LAST_MODIFIED_DATE = fedora.lastModified
HAS_MIXIN_TYPE = fedora.mixinTypes
WRITABLE = fedora.writable

# containment
CONTAINS = ldp.contains
DESCRIBES = iana.describes

# binary technical metadata
DIGEST = fedora.digest
HAS_SIZE = premis.hasSize
HAS_ORIGINAL_NAME = premis.hasOriginalName
HAS_MIME_TYPE = ebucore.hasMimeType
HAS_EVENT_OUTCOME = premis.hasEventOutcome

BINARY_MIXINS = {'fedora:datastream', 'fedora:binary'}
"""Mixin values that mark a child as a binary"""

BINARY_TYPES = {fedora.Binary, ldp.NonRDFSource}
"""`rdf:type` values that mark a child as a binary"""
